"""Setup configuration for delivery_metrics"""

from setuptools import setup, find_namespace_packages

setup(
    name="delivery-metrics",
    version="0.1.0",
    description=(
        "CLI tool for DORA delivery metrics on GitHub repositories: deployment "
        "frequency, lead time, change failure rate and MTTR."
    ),
    author="Delivery Metrics Contributors",
    author_email="",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src"),
    install_requires=[
        "requests>=2.28.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "black>=22.0",
            "flake8>=4.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "delivery-metrics=delivery_metrics.main:main",
        ],
    },
)
