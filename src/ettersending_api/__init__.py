"""
k9 Ettersending API - REST API for supplementary submissions

This package provides a FastAPI-based web service that receives
"ettersendinger" (supplementary documentation for an already filed benefit
application) from the frontend and hands them to downstream processing. It
enables:

- Validation of submissions before anything else happens
- Applicant lookup and legal-age checks
- Upload, retrieval and deletion of attachments in k9-mellomlagring
- Hand-off to k9-ettersending-mottak over HTTP or to a Kinesis stream
- Releasing held attachments again when the hand-off fails

Key Components:
    - main: FastAPI application, wiring and HTTP endpoint definitions
    - submission_service: The registration flow and its compensation
    - validation: Business rules for submissions and attachments
    - k9format: Mapping to the canonical record sent downstream
    - applicant / attachments / dispatch: Gateways to the backing services
    - auth: Caller id tokens and cached system tokens
    - configuration: Config loading and merging logic
    - models: Pydantic models for requests, records and problem details

Usage:
    Run the API server with:
        uvicorn ettersending_api.main:app --reload --host 0.0.0.0 --port 8080
"""
