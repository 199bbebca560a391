from .locations import Location, DocumentSequence
from .orders import RepairOrder, QualityChecklistItem, StatusHistoryEntry
from .estimates import CostEstimate, CostEstimateHistoryEntry
from .inventory import Part, PartUsageReservation, StockMovement
from .counts import InventorySession, InventoryCount

__all__ = [
    'Location', 'DocumentSequence',
    'RepairOrder', 'QualityChecklistItem', 'StatusHistoryEntry',
    'CostEstimate', 'CostEstimateHistoryEntry',
    'Part', 'PartUsageReservation', 'StockMovement',
    'InventorySession', 'InventoryCount',
]
