"""
AudioSummarizer — setuptools build script.

Usage:
    # Development install:
    pip install -e .[test]

    # Run the CLI:
    audiojobs talk.mp3 --output-dir ./results
"""

from setuptools import setup, find_namespace_packages

APP_NAME = "audiojobs"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Queue-backed audio/video transcription and summarization",
    packages=find_namespace_packages(include=["audiojobs", "audiojobs.*"]),
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
    ],
    extras_require={
        "test": ["pytest"],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "audiojobs=main:main",
        ],
    },
)
