from .base import Signer, SubmitError, SubmitErrorKind
from .DryRunSigner import DryRunSigner
from .HttpSigner import HttpSigner

__all__ = [
    "DryRunSigner",
    "HttpSigner",
    "Signer",
    "SubmitError",
    "SubmitErrorKind",
]
