#!/usr/bin/env python3
"""
Setup script for pygenepipe
"""

from setuptools import setup, find_packages

setup(
    name="pygenepipe",
    version="0.1.0",
    description="Evidence-driven gene prediction and gene model training pipeline",
    packages=find_packages(include=["genepipe", "genepipe.*"]),
    install_requires=[
        "pyyaml>=6.0",
        "biopython>=1.79",
        "numpy>=1.22.0",
        "pandas>=1.4.0",
    ],
    extras_require={
        'dev': [
            "pytest>=7.0",
        ],
    },
    entry_points={
        'console_scripts': [
            'genepipe=genepipe.cli.main:main',
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires=">=3.9",
)
