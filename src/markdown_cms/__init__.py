"""
Markdown CMS API - file-backed content API for static-site builds

This package provides a FastAPI-based web service that exposes a directory of
markdown files with YAML front matter as JSON. It enables:

- Listing, reading, creating and replacing markdown documents
- Watching the markdown directory for changes
- Debounced build triggers to Netlify, Vercel, GitHub repository dispatch
  or a custom webhook
- Optional auto-commit and push of changed files to the source repository

A static-site generator fetches the full listing at build time, and the
browser editor uses the same endpoints to edit files live.

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - document_store: Markdown file CRUD over the store directory
    - frontmatter: Front-matter parsing and scalar emission
    - watcher: Filesystem watcher with trailing-edge build debounce
    - dispatcher: Webhook notifications and auto-commit orchestration
    - git_ops: Version-control capability and the commit/push flow
    - configuration: Layered settings (defaults, YAML, environment)

Usage:
    Run the API server with:
        markdown-cms-api

    Or directly through uvicorn:
        uvicorn markdown_cms.main:app --host 0.0.0.0 --port 3001
"""
