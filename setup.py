"""
Setup script for render-service project.

Allows development installation with `pip install -e .`
After installing, fetch the browser with `playwright install chromium`.
"""

from setuptools import setup, find_packages

setup(
    name="render-service",
    version="0.1.0",
    packages=find_packages(include=["render_service", "render_service.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn[standard]>=0.29",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "python-dotenv>=1.0",
        "playwright>=1.40",
        "slowapi>=0.1.9",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
            "httpx>=0.25",
        ],
    },
    entry_points={
        "console_scripts": [
            "render-service=render_service.app:main",
        ],
    },
)
