import pytest
import numpy as np
from adanuts.models import AUTOGRAD_AVAILABLE, DensityModel, Model

SEED = 3046987125


@pytest.fixture
def rng():
    return np.random.default_rng(SEED)


def test_model_is_abstract():
    with pytest.raises(TypeError):
        Model()


def test_explicit_gradient(rng):
    model = DensityModel(
        lambda q: -np.sum(q**2) / 2, 3, grad_log_dens=lambda q: -q)
    pos = rng.standard_normal(3)
    log_dens, grad = model.log_density_and_gradient(pos)
    assert model.dimension() == 3
    assert isinstance(log_dens, float)
    assert np.isclose(log_dens, -np.sum(pos**2) / 2)
    assert np.allclose(grad, -pos)


def test_invalid_dimension():
    with pytest.raises(ValueError):
        DensityModel(lambda q: 0., 0, grad_log_dens=lambda q: q)


@pytest.mark.skipif(AUTOGRAD_AVAILABLE, reason='autograd available')
def test_missing_gradient_without_autograd():
    with pytest.raises(ValueError):
        DensityModel(lambda q: 0., 2)


@pytest.mark.skipif(not AUTOGRAD_AVAILABLE, reason='autograd not available')
def test_autograd_gradient(rng):
    import autograd.numpy as anp
    model = DensityModel(lambda q: -anp.sum(anp.cos(q) * q**2), 4)
    pos = rng.standard_normal(4)
    log_dens, grad = model.log_density_and_gradient(pos)
    assert np.isclose(log_dens, -np.sum(np.cos(pos) * pos**2))
    assert np.allclose(grad, np.sin(pos) * pos**2 - 2 * np.cos(pos) * pos)
