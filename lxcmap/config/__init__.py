"""Container map and inventory loading."""
from lxcmap.config.inventory import Inventory, load_inventory
from lxcmap.config.loader import MapLoader, parse

__all__ = ['Inventory', 'MapLoader', 'load_inventory', 'parse']
