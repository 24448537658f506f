from setuptools import setup

setup(
    name="js-recon-scanner",
    version="0.1.0",
    description="Scan web pages and their JavaScript for secrets, endpoints, subdomains and DOM XSS sinks",
    package_dir={"": "src"},
    py_modules=[
        "scan_models",
        "rule_catalog",
        "pattern_compiler",
        "entropy_scorer",
        "scan_engine",
        "domain_classifier",
        "storage",
        "result_cache",
        "scan_worker",
        "content_gatherer",
        "scan_coordinator",
        "exporter",
        "sourcemap_parser",
        "settings",
        "utils",
        "recon",
    ],
    install_requires=[
        "requests>=2.31.0",
        "beautifulsoup4>=4.12.2",
        "pyyaml>=6.0.1",
        "fastapi>=0.109.0",
        "uvicorn>=0.27.0",
        "sqlalchemy>=2.0.25",
        "tqdm>=4.66.1",
        "colorama>=0.4.6",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "httpx>=0.25.0",
        ],
    },
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Security",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.9",
    ],
)
