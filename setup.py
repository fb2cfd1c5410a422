# setup.py
from setuptools import setup, find_packages

setup(
    name="mpt",
    version="0.1.0",
    packages=find_packages(include=["mpt", "mpt.*"]),
    python_requires=">=3.10",
    install_requires=[
        "rlp",                 # canonical node encoding
        "pycryptodome",        # keccak-256
        "msgpack",             # proof bundles
        "prometheus-client",   # metrics
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "mpt-proof=mpt.proof_tool:main",
        ],
    },
)
