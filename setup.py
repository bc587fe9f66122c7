from setuptools import setup

__version__ = "1.0.0"
__author__ = "Unibox Contributors"
__license__ = "MIT"

setup( name = 'unibox',
       version = __version__,
       description = 'Loopback OAuth2 login and file access for Dropbox from desktop tools',
       author = __author__,
       license = __license__,
       packages = [ 'unibox' ],
       zip_safe = True,
       python_requires = '>=3.8',
       install_requires = [ 'requests', 'pyyaml', 'tabulate', 'termcolor' ],
       extras_require = {
           'test': [ 'pytest' ],
       },
       long_description = 'Python SDK completing the OAuth2 implicit grant through a loopback redirect, with a thin storage client.',
       entry_points = {
           'console_scripts': [
               'unibox=unibox.__main__:main',
           ],
       },
)
