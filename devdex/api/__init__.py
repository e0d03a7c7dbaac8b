"""
REST API module for DevDex.

Provides FastAPI endpoints for:
- Admin login
- Project catalog and file upload
- Analysis jobs
- Oracle chat sessions
- Catalog export/import
"""
