from setuptools import setup, find_packages

setup(
    name="examcore",
    version="0.1.0",
    packages=find_packages(include=["examcore", "examcore.*"]),
    install_requires=[
        "fastapi>=0.100.0",
        "uvicorn>=0.23.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "sqlalchemy>=2.0.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "httpx>=0.24.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "examcore-server=examcore.scripts.run_server:main",
        ],
    },
    python_requires=">=3.9",
)
