"""Hierarchical matrix compression by recursive skeletonization.

Entry points: `rskelf` (compressed factorization), `rskel` (compressed
multiply) and `mf` (exact multifrontal factorization of sparse matrices).
"""

from .mf import mf, mf_cholmv, mf_cholsv, mf_diag, mf_logdet, mf_mv, mf_slogdet, mf_sv
from .rskel import rskel, rskel_mv
from .rskelf import (
    rskelf,
    rskelf_aslinearoperator,
    rskelf_cholmv,
    rskelf_cholsv,
    rskelf_diag,
    rskelf_logdet,
    rskelf_mv,
    rskelf_slogdet,
    rskelf_sv,
)
from .skel.errors import (
    AccuracyNotMetError,
    DimensionMismatchError,
    FactorModeError,
    InvalidConfigurationError,
    NumericalDegeneracyWarning,
)
from .skel.interp import interp_decomp
from .skel.snorm import snorm
from .skel.tree import hypoct
from .skel.types import Factor, Skeletonization


__all__ = [
    'rskelf',
    'rskelf_mv',
    'rskelf_sv',
    'rskelf_cholmv',
    'rskelf_cholsv',
    'rskelf_slogdet',
    'rskelf_logdet',
    'rskelf_diag',
    'rskelf_aslinearoperator',
    'rskel',
    'rskel_mv',
    'mf',
    'mf_mv',
    'mf_sv',
    'mf_cholmv',
    'mf_cholsv',
    'mf_slogdet',
    'mf_logdet',
    'mf_diag',
    'hypoct',
    'interp_decomp',
    'snorm',
    'Factor',
    'Skeletonization',
    'AccuracyNotMetError',
    'DimensionMismatchError',
    'FactorModeError',
    'InvalidConfigurationError',
    'NumericalDegeneracyWarning',
]
