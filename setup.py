from setuptools import setup, find_packages

setup(
    name="storeforge",
    version="0.1.0",
    description="StoreForge - agent orchestration for turning product photos into bilingual store listings",
    author="StoreForge Team",
    packages=find_packages(include=["storeforge", "storeforge.*"]),
    include_package_data=True,
    package_data={"storeforge.agents.prompts": ["*.yaml"]},
    install_requires=[
        # Core data modeling and validation
        "pydantic>=2.0.0",

        # Async HTTP client (for LLM providers)
        "httpx>=0.25.0",

        # Environment variables
        "python-dotenv>=1.0.0",

        # CLI and rich output
        "typer>=0.9.0",
        "rich>=13.0.0",

        # YAML support for prompts
        "pyyaml>=6.0.0",

        # Jinja2 for prompt templates
        "jinja2>=3.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "fastapi>=0.100.0",
        ],
        "api": [
            # HTTP streaming surface
            "fastapi>=0.100.0",
            "uvicorn>=0.23.0",
        ],
        "all": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "fastapi>=0.100.0",
            "uvicorn>=0.23.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "storeforge = storeforge.app.main:main",
        ],
    },
    python_requires=">=3.11",
    package_dir={"": "."},
)
