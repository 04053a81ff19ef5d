"""Set-up file for porenet for installations using ``pip install .``"""
from setuptools import find_packages, setup


with open("requirements.txt") as f:
    required = f.read().splitlines()

with open("requirements-dev.txt") as f:
    required_dev = f.read().splitlines()


setup(
    name="porenet",
    version="0.3.0",
    license="GPL",
    keywords=["pore network multiphase flow invasion percolation tracer"],
    install_requires=required,
    extras_require={"test": required_dev},
    description="Pore-network simulation of multiphase displacement and transport",
    platforms=["Linux", "Windows", "Mac OS-X"],
    package_data={"porenet": ["py.typed"]},
    packages=find_packages("src"),
    package_dir={"": "src"},
    python_requires=">=3.10",
    zip_safe=False,
)
