"""
Setup configuration for the incremental pose-graph SLAM back-end.
"""

from setuptools import setup, find_packages

setup(
    name="graph-slam",
    version="0.1.0",
    description="Incremental pose-graph SLAM with shadow-graph covariances and loop-closure validation",
    author="Graph SLAM Team",
    packages=find_packages(include=["graph_slam", "graph_slam.*", "tools"]),
    python_requires=">=3.8",
    install_requires=[
        "numpy>=1.24.0",
        "scipy>=1.10.0",
        "gtsam>=4.2",
        "pydantic>=2.0.0",
        "pyyaml>=6.0",
        "typer>=0.9.0",
        "rich>=13.0.0",
        "plotly>=5.14.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.3.0",
            "pytest-cov>=4.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "graph-slam=tools.cli:main",
        ],
    },
)
