"""Host-side services: Proxmox access and in-container bootstrap."""
