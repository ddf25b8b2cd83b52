from setuptools import setup, find_packages


setup(
    name="ziptree",
    version="0.1",
    packages=find_packages(include=["ziptree", "ziptree.*"]),
    description="Pack directory trees into ZIP archives and unpack them, with optional per-entry encryption.",
    author="vercingetorx",
    python_requires=">=3.9",
    install_requires=[
        "pycryptodomex>=3.23.0",
        "argon2-cffi>=23.1.0",
    ],
    entry_points={
        "console_scripts": [
            "ziptree=ziptree.cli:main",
        ]
    },
)
