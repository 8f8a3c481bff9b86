"""
Setup script for Ferry - Direct file sharing with short rendezvous codes.

Created by orpheus497

Ferry provides:
- Short numeric or base36 codes that resolve to the sender's address
- Direct sender-to-receiver sessions (no file storage on any server)
- Chunked, paced transfer of one or more files with progress reporting
- Pluggable rendezvous directory (memory, shared folder, HTTP server)
- Share links and QR codes for out-of-band code distribution
"""

from setuptools import setup, find_packages
import os

this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='ferry-share',
    version='1.0.0',
    author='orpheus497',
    description='Direct peer-to-peer file sharing with short rendezvous codes',
    long_description=long_description,
    long_description_content_type='text/markdown',
    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: End Users/Desktop',
        'Topic :: Communications :: File Sharing',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Operating System :: OS Independent',
        'Environment :: Console',
    ],
    python_requires='>=3.8',
    install_requires=[
        'rich>=13.7.0',
        'aiofiles>=23.2.1',
        'flask>=2.3.0',
        'flask-cors>=4.0.0',
        'tomli>=2.0.0; python_version<"3.11"',
    ],
    extras_require={
        'qr': [
            'qrcode>=7.4.2',
            'pillow>=10.0.0',
            'pyzbar>=0.1.9',
        ],
        'nat': [
            'pystun3>=1.0.0',
            'miniupnpc>=2.0.2',
        ],
        'test': [
            'pytest>=7.4.0',
            'pytest-asyncio>=0.21.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'ferry=ferry.cli:main',
            'ferry-directory=ferry.directory_server:main',
        ],
    },
)
