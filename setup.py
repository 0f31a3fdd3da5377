from setuptools import setup, find_packages

setup(
    name="sarahsbooks",
    version="1.0.0",
    description="Routing and recommendation assembly for Sarah's Books",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0",
        "numpy",
        "openai>=1.0",
        "anthropic",
        "requests",
        "fastapi",
        "uvicorn",
        "typer",
        "rich",
    ],
    extras_require={
        "test": [
            "pytest",
            "httpx",
        ],
    },
    entry_points={
        'console_scripts': [
            'sarahsbooks=sarahsbooks.cli:app',
        ],
    },
)
