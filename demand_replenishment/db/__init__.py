# demand_replenishment/db/__init__.py
from .connection import DatabaseConnection
from .gateway import PersistenceGateway, to_dict, format_po_number, parse_po_sequence

__all__ = [
    'DatabaseConnection',
    'PersistenceGateway',
    'to_dict',
    'format_po_number',
    'parse_po_sequence'
]
