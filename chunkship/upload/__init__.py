from .progress import ProgressEvent, ProgressReporter
from .orchestrator import (
    UploadOrchestrator,
    UploadSession,
    UploadMode,
    UploadPlan,
    UploadStats,
    SessionState,
    VerificationResult,
    PromotionResult,
    VersionListing,
    UploadError,
    ManifestPublishError,
    UploadCancelledError,
    PromotionError
)

__all__ = [
    'ProgressEvent',
    'ProgressReporter',
    'UploadOrchestrator',
    'UploadSession',
    'UploadMode',
    'UploadPlan',
    'UploadStats',
    'SessionState',
    'VerificationResult',
    'PromotionResult',
    'VersionListing',
    'UploadError',
    'ManifestPublishError',
    'UploadCancelledError',
    'PromotionError'
]
