from setuptools import setup, find_packages

setup(
    name="m3u8_downloader",
    version="1.0.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=["ffmpeg-progress-yield", "m3u8", "httpx[http2]", "certifi"],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        'console_scripts': [
            'm3u8-download=m3u8_downloader.cli:main',
        ],
    },
    description="Concurrent, pausable and resumable HLS (m3u8) segment downloader",
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    license="LGPLv3",
    python_requires=">=3.8",
    classifiers=[
        "License :: OSI Approved :: GNU Lesser General Public License v3 (LGPLv3)",
        "Programming Language :: Python",
    ],
)
