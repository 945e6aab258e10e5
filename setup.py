"""
FaultMaven SSO Service

Organization single sign-on (SAML 2.0 and OpenID Connect) for the
FaultMaven authentication stack.
"""

from setuptools import setup, find_packages

setup(
    name="fm-sso-service",
    version="1.0.0",
    description="FaultMaven SSO Service - SAML 2.0 and OIDC login for organizations",
    author="FaultMaven",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.11",
    install_requires=[
        # Web framework
        "fastapi>=0.110.0",
        "uvicorn[standard]>=0.27.0",
        "python-multipart>=0.0.9",

        # Configuration and models
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",

        # PostgreSQL support
        "sqlalchemy[asyncio]>=2.0.25",
        "asyncpg>=0.29.0",

        # Database migrations
        "alembic>=1.13.0",

        # Ephemeral SSO state (optional backend)
        "redis>=5.0.1",

        # OIDC: discovery, token exchange, ID token verification
        "httpx>=0.26.0",
        "python-jose[cryptography]>=3.3.0",

        # SAML: response parsing, SP metadata, XML-DSig verification
        "defusedxml>=0.7.1",
        "python3-saml>=1.16.0",

        # Monitoring and observability
        "sentry-sdk[fastapi]>=1.39.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "pytest-cov>=4.1.0",
            "aiosqlite>=0.19.0",
            "cryptography>=41.0.0",
            "black>=23.10.0",
            "flake8>=6.1.0",
            "mypy>=1.7.0",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3.11",
        "License :: Other/Proprietary License",
    ],
)
