# conftest.py
import matplotlib
import pytest

@pytest.fixture(autouse=True)
def mpl_test_backend():
    """Non-interactive backend; figures opened by a test are closed after it."""
    matplotlib.use('Agg')
    yield
    import matplotlib.pyplot as plt
    plt.close('all')
