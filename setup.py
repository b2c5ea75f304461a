from setuptools import setup, find_packages

setup(
    name="dhtmsg",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "kademlia>=2.2.2",
        "pyyaml>=6.0.2",
        "python-dotenv>=1.0.1",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "dhtmsg=dhtmsg.__main__:main",
        ],
    },
    description="Tiny UDP hello over DHT peer discovery",
    keywords="p2p, dht, rendezvous, udp",
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
    ],
)
