"""Set-up file for compflux for installations using ``pip install .``"""
from setuptools import find_packages, setup


with open("requirements.txt") as f:
    required = f.read().splitlines()


setup(
    name="compflux",
    version="0.3.0",
    license="GPL",
    keywords=["compositional multiphase flow upwind flux jacobian"],
    install_requires=required,
    extras_require={"testing": ["pytest>=7.0"]},
    description="Upwinded phase and component fluxes with exact derivatives for "
    "fully implicit compositional flow",
    platforms=["Linux", "Windows", "Mac OS-X"],
    package_data={"compflux": ["py.typed"]},
    packages=find_packages("src"),
    package_dir={"": "src"},
    python_requires=">=3.10",
    zip_safe=False,
)
