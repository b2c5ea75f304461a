"""
Application layer: the rendezvous node built from the networking parts.
"""

from .node import RendezvousNode

__all__ = ['RendezvousNode']
