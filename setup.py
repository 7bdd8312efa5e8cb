from setuptools import setup, find_namespace_packages

REQUIREMENTS = open("requirements.txt").read().splitlines()

setup(
    name="amazing_emd",
    version="0.1.0",
    description="Exact Energy Mover's Distances between weighted events with a network simplex solver",
    author="Lennart Kämmle",
    author_email="lennart.kaemmle@desy.de",
    packages=find_namespace_packages(include=("amazing_emd", "amazing_emd.*")),
    install_requires=REQUIREMENTS,
    extras_require={"test": ["pytest"]},
    python_requires=">=3.9",
)
