from setuptools import setup, find_packages

setup(
    name="equipment_tracker",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pandas",
        "numpy",
        "pyyaml",
    ],
    extras_require={
        "test": ["pytest"],
    },
)
