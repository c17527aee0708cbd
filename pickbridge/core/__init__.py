"""Core application components.

This module provides the foundational components for the pickbridge API:
- Database connection management via Prisma
- Application settings and configuration
- Encryption of provider credentials at rest
"""
