from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="finproxy",
    version="0.1.0",
    author="finproxy Team",
    description="Caching Yahoo Finance proxy with retries and synthetic fallback data",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Financial and Insurance Industry",
        "Topic :: Office/Business :: Financial :: Investment",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.11",
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.21",
            "pytest-cov>=4.1",
        ],
    },
    entry_points={
        "console_scripts": [
            "finproxy=finproxy.main:cli",
        ],
    },
)
