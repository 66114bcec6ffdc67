"""
Policy domain: models, repository and matching service.
"""

from .exceptions import (
    LoadError,
    ConflictError,
    NotFoundError,
    NotReadyError,
    ServiceUnavailableError
)
from .models import Policy, SimilarityResult, LoadWarning, RepositoryStatus
from .similarity import cosine_similarity
from .repository import PolicyRepository
from .matching import PolicyMatchingService

__all__ = [
    'LoadError',
    'ConflictError',
    'NotFoundError',
    'NotReadyError',
    'ServiceUnavailableError',
    'Policy',
    'SimilarityResult',
    'LoadWarning',
    'RepositoryStatus',
    'cosine_similarity',
    'PolicyRepository',
    'PolicyMatchingService'
]
