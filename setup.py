from setuptools import setup, find_packages

setup(
    name="scanchor",
    version="0.1.0",
    description="Anchor-based integration and clustering of single-cell batches",
    long_description="Projects single-cell expression batches into a shared basis, corrects batch effects through mutual-nearest-neighbor anchors, clusters the corrected cells and transfers labels from a reference.",
    long_description_content_type="text/markdown",
    keywords="scrnaseq batch correction integration anchors clustering label transfer",
    python_requires=">=3.9",
    install_requires=[
        "numpy",
        "scipy",
        "pandas",
        "scikit-learn",
        "hnswlib",
        "numba",
        "leidenalg",
        "python-igraph",
    ],
    extras_require={
        "anndata": ["anndata"],
        "test": ["pytest", "anndata"],
    },
    packages=find_packages("src"),
    package_dir={"": "src"},
    include_package_data=True,
    zip_safe=False,
)
