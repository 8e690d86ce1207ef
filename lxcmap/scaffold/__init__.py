"""Deployment artifacts: SSH keys, Ansible inventory, playbook stub."""
from lxcmap.scaffold.core import ScaffoldManager
from lxcmap.scaffold.keys import KeyManager

__all__ = ['KeyManager', 'ScaffoldManager']
