"""Google Workspace integration for generated artifacts.

OAuth token lifecycle, a cached API service factory, and async services for
assembling Docs, building the Slides workbook and managing Drive files.
"""

from src.trailmap.google.auth import GoogleServiceFactory
from src.trailmap.google.docs import CreatedDocument, GoogleDocsService
from src.trailmap.google.drive import GoogleDriveService, extract_file_id_from_url
from src.trailmap.google.slides import CreatedPresentation, GoogleSlidesService
from src.trailmap.google.tokens import (
    Credential,
    FileCredentialStore,
    OAuthClient,
    TokenManager,
)

__all__ = [
    "CreatedDocument",
    "CreatedPresentation",
    "Credential",
    "FileCredentialStore",
    "GoogleDocsService",
    "GoogleDriveService",
    "GoogleServiceFactory",
    "GoogleSlidesService",
    "OAuthClient",
    "TokenManager",
    "extract_file_id_from_url",
]
