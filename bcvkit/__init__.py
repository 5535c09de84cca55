"""Libvirt domain XML, volume listing, disk upload and VM helpers for bootc images."""

__version__ = "0.1.0"