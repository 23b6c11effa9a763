from setuptools import find_packages, setup

setup(
    name="pmp",
    version="0.1.0",
    description="Dependency-aware orchestration of infrastructure-as-code projects",
    python_requires=">=3.9",
    packages=find_packages(include=["pmp", "pmp.*"]),
    install_requires=[
        "pydantic>=2.0",
        "pyyaml>=6.0",
        "rich>=13.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "pmp=pmp.cli.main:main",
        ],
    },
)
