from setuptools import setup, find_packages

setup(
    name="venmorph-attestor",
    version="0.1.0",
    description="Venmorph attestor: settles Flare payment requests with XRPL payments",
    packages=find_packages(exclude=["tests", "tests.*", "migrations", "migrations.*"]),
    install_requires=[
        'xrpl-py',
        'web3>=7',
        'aiohttp',
        'eth-account',
        'sqlalchemy>=2',
        'alembic',
        'toml',
        'loguru'
    ],
    extras_require={
        'test': ['pytest', 'pytest-asyncio'],
    },
    entry_points={
        'console_scripts': ['venmorph-attestor=venmorph.__main__:main'],
    },
    python_requires=">=3.11",
)
