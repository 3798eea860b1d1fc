import re

from setuptools import setup

with open("README.rst") as readme:
    long_description = readme.read()

with open("ctvpool/__init__.py") as init:
    __version__ = re.search(r'^__version__ = "([^"]+)"', init.read(), re.M).group(1)

setup(
    name="ctvpool",
    version=__version__,
    description="Pre-committed exit trees for shared UTXOs using OP_CHECKTEMPLATEVERIFY and taproot",
    long_description=long_description,
    license="MIT",
    keywords="bitcoin covenant ctv bip119 taproot pool",
    install_requires=[
        "base58check>=1.0.2,<2.0",
        "coincurve>=13.0.0",
        "python-bitcoinrpc>=1.0,<2.0",
    ],
    extras_require={
        "test": ["pytest", "python-bitcoinlib>=0.12"],
    },
    entry_points={
        "console_scripts": ["ctvpool=ctvpool.cli:main"],
    },
    packages=["ctvpool"],
    zip_safe=False,
)
