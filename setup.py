from setuptools import setup, find_packages

setup(
    name="loudguard",
    version="0.3",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "tqdm",
        "mutagen",
        "av",
        "pyebur128",
        "numpy",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "loudguard=loudguard.__main__:main",
        ],
    },
    python_requires=">=3.9",
    author="Nick Kossifidis",
    author_email="mickflemm@gmail.com",
    description="ReplayGain 2.0 loudness scanner and tagger (EBU R128)",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    url="https://rastapank.radio.uoc.gr",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: GNU General Public License v2 or later (GPLv2+)",
        "Operating System :: OS Independent",
    ],
)
