"""
Cis-association testing of phenotypes against nearby variants
"""

from .cis_scan import scan, cis_pairs

__all__ = ['scan', 'cis_pairs']
