"""
Backup, restore and sync of OpenClaw state between a VM and the local disk.
"""
