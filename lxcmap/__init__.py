"""lxcmap - declarative LXC container maps for Proxmox clusters."""

__version__ = "0.3.0"
