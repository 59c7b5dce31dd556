import setuptools


with open("README.md", "r") as fh:
    long_description = fh.read()

if __name__ == '__main__':
    setuptools.setup(
        name="marketqueue",
        version="0.1.0",
        description="Rate-limited, queue-driven download of daily market data",
        long_description=long_description,
        long_description_content_type="text/markdown",
        license="MIT",
        keywords="market data stocks crypto rate limit queue",
        packages=setuptools.find_packages(exclude=["tests", "tests.*"]),
        classifiers=[
            "License :: OSI Approved :: MIT License",
            "Operating System :: OS Independent",
            "Programming Language :: Python :: 3.11",
            "Programming Language :: Python :: 3.12",
        ],
        python_requires='>=3.11',
        install_requires=[
            "pandas>=2.0",
            "pydantic>=2.0",
            "pyyaml>=6.0",
            "typer>=0.9",
            "rich>=13.0",
            "backoff>=2.1.2",
            "httpx>=0.25",
        ],
        extras_require={
            "test": ["pytest>=7.0"],
        },
        entry_points={
            "console_scripts": ["marketqueue=marketqueue.cli:app"],
        },
    )
