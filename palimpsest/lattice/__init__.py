"""
Per-line decoding over the sparse transition lattice.

Example:
    >>> from palimpsest.lattice import SparseTransitionLattice
    >>> lattice = SparseTransitionLattice(gsm, lm, font)
    >>> best = lattice.decode(line_image)
    >>> log_z = lattice.posterior(line_image, gsm.new_statistics(), font.new_statistics())
"""

from palimpsest.lattice.decoder import (
    START,
    Edge,
    NodeKey,
    SparseTransitionLattice,
    log_add,
)

__all__ = [
    "SparseTransitionLattice",
    "NodeKey",
    "Edge",
    "START",
    "log_add",
]
