"""
Face Auth Application

Face registration, authentication and verification service using:
- AWS Rekognition for face detection, indexing and search
- Amazon S3 for registration images
- SQLAlchemy (PostgreSQL) for the user registry
- FastAPI for the RESTful API
"""

__version__ = "1.0.0"
