"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from deskflow.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    ResourceNotFoundException,
    ConfigurationException,
    AuthenticationException,
    AuthorizationException,
    ExternalServiceException,
    EvaluationException,
    ActionException,
    RecursionLimitException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "AuthenticationException",
    "AuthorizationException",
    "ExternalServiceException",
    "EvaluationException",
    "ActionException",
    "RecursionLimitException",
]
