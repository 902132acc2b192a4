import setuptools
from pathlib import Path

ROOT = Path(__file__).parent


def read_requirements(filename: str = "requirements.txt") -> list[str]:
    req_path = ROOT / filename
    if not req_path.exists():
        return []
    reqs: list[str] = []
    for line in req_path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        reqs.append(line)
    return reqs


readme = ROOT / "README.md"
long_description = readme.read_text(encoding="utf-8") if readme.exists() else ""

setuptools.setup(
    name="convcore",
    version="0.1.0a0",  # PEP 440 compliant
    description=(
        "Convolution and fully-connected compute kernels (im2row lowering, "
        "BLAS-style GEMM) with CPU/CUDA dispatch by device and dtype."
    ),
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="Apache-2.0",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
    ],
    package_dir={"": "src"},
    packages=setuptools.find_namespace_packages(where="src", include=["convcore*"]),
    python_requires=">=3.10",
    install_requires=read_requirements(),
    extras_require={
        "cuda": ["cupy-cuda12x"],
        "test": ["python-dotenv"],
    },
    zip_safe=False,
)
