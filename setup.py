from setuptools import setup, find_packages


setup(
    name="slorpit",
    version="0.1",
    packages=find_packages(include=["slorpit", "slorpit.*"]),
    description="Store files inside a valid, viewable PDF document and extract them again.",
    author="slorpit",
    install_requires=[
        "pycryptodomex>=3.23.0",
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
    entry_points={
        "console_scripts": [
            "slorpit=slorpit.cli:main",
            "slorp=slorpit.cli:slorp_main",
            "unslorp=slorpit.cli:unslorp_main",
        ]
    },
)
