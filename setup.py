"""Setup script for kube_actions package."""

from setuptools import setup, find_packages

setup(
    name="kube_actions",
    version="0.1.0",
    description="Run named container actions as tracked Kubernetes Jobs",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.9",
    install_requires=[
        "pyyaml>=5.4",
        "click>=8.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-cov>=4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "kube-actions=kube_actions.cli.main:cli",
        ],
    },
)
