from setuptools import setup, find_packages

setup(
    name="gfaas",
    version="0.1.0",
    description="gfaas - sandboxed Wasm functions on a local WASI runtime or a remote compute marketplace",
    author="gfaas Team",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pyzmq>=24.0.0",
        "opentelemetry-api>=1.14.0",
        "opentelemetry-sdk>=1.14.0",
        "opentelemetry-exporter-otlp>=1.14.0",
        "python-dotenv>=1.0.0",
        "wasmtime>=27.0.0,<48",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov",
            "black",
            "isort",
            "pylint",
        ],
    },
    entry_points={
        "console_scripts": [
            "gfaas=gfaas.cli:main",
        ],
    },
    python_requires=">=3.11",
)
